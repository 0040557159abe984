import os
import sys

# Run against a scratch database unless one is given explicitly
os.environ.setdefault("DATABASE_URL", "sqlite:///./verify_payroll.db")

from fastapi.testclient import TestClient

from opsdesk.main import app

PERIOD = {"type": "labour", "month": 5, "year": 2024}
STATUSES = ["Present"] * 22 + ["Off"] * 3 + ["Absent"] * 2 + [""] * 3
EXPECTED_NET = 2656.25


def check(condition, message):
    if not condition:
        print(f"Error: {message}")
        sys.exit(1)


try:
    with TestClient(app) as client:
        print("Calculating labour payroll...")
        response = client.post("/api/payroll/calculate", json={
            **PERIOD,
            "employees": [{"employeeId": 1, "name": "Ravi", "designation": "Mason", "ratePerDay": 100, "otHours": 10}],
            "attendance": [{"employeeId": 1, "name": "Ravi", "days": {day: s for day, s in enumerate(STATUSES, start=1)}}],
        })
        check(response.status_code == 200, f"calculate returned {response.status_code}: {response.text}")
        [row] = response.json()["data"]
        print(f" - paid days {row['paidDays']}, deduction {row['deductionAmount']}, net {row['netSalary']}")
        check(row["netSalary"] == EXPECTED_NET, f"expected net {EXPECTED_NET}, got {row['netSalary']}")

        print("\nSaving payroll...")
        row.update(isCash=False, paymentMethod="Bank Transfer")
        response = client.post("/api/payroll", json={**PERIOD, "data": [row]})
        check(response.status_code == 200, f"save returned {response.status_code}: {response.text}")
        print(f" - {response.json()['message']}")

        print("\nReading saved payroll back...")
        response = client.get("/api/payroll", params=PERIOD)
        check(response.status_code == 200, f"read returned {response.status_code}: {response.text}")
        body = response.json()
        check(body["savedFromSheet"], "no saved rows found")
        saved = body["data"][0]
        check(saved["netSalary"] == EXPECTED_NET, f"saved net {saved['netSalary']} != {EXPECTED_NET}")
        check(saved["paymentMethod"] == "Bank Transfer", f"unexpected payment method {saved['paymentMethod']}")

    print("\nSuccess: calculate, save and read-back agree.")

except Exception as e:
    print(f"Verification failed: {e}")
    sys.exit(1)
