import unittest
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest import mock

from fastapi.testclient import TestClient

import main
from audit import PERMITTED_CHARS
from constants import VALIDATION_LIMITS, WeightCentiles
from main import app


class TestCalculatorAPI(unittest.TestCase):

    def setUp(self):
        self.client = TestClient(app)
        self.payload = {
            "legalAgreement": True,
            "patientAge": 8.5,
            "patientSex": "female",
            "patientHash": "a1" * 32,
            "protocolStartDatetime": self.hours_ago(1),
            "pH": 7.15,
            "glucose": 24.0,
            "ketones": 4.2,
            "weight": 20.0,
            "weightLimitOverride": False,
            "shockPresent": False,
            "insulinRate": 0.1,
            "preExistingDiabetes": False,
            "episodeType": "real",
        }

    @staticmethod
    def hours_ago(hours):
        return (datetime.now(timezone.utc) - timedelta(hours=hours)).isoformat()

    def post(self, **changes):
        return self.client.post("/calculate", json=dict(self.payload, **changes))

    def test_01_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "active")

    def test_02_successful_calculation(self):
        response = self.post()
        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()

        self.assertEqual(len(body["auditID"]), 6)
        self.assertTrue(all(c in PERMITTED_CHARS for c in body["auditID"]))

        calculations = body["calculations"]
        self.assertEqual(calculations["severity"], "moderate")
        self.assertEqual(calculations["bolusVolume"]["value"], 200.0)
        self.assertEqual(calculations["deficit"]["volumeLessBolus"]["value"], 800.0)
        self.assertEqual(calculations["maintenance"]["volume"]["value"], 1500.0)
        self.assertEqual(calculations["insulinRate"]["working"],
                         "[0.1 Units/kg/hour] x [20.0kg] = 2.00 Units/hour")
        self.assertEqual(calculations["errors"], [])

    def test_03_engine_errors_return_400(self):
        response = self.post(**{"pH": 7.4, "bicarbonate": 20.0})
        self.assertEqual(response.status_code, 400)
        errors = response.json()["errors"]
        self.assertTrue(errors[0].startswith("pH of 7.4 and bicarbonate of 20.0 mmol/L"))

    def test_04_request_validation(self):
        cases = {
            "legal agreement": {"legalAgreement": False},
            "sex": {"patientSex": "unknown"},
            "pH range": {"pH": 5.0},
            "weight range": {"weight": 0.5},
            "ketones below threshold": {"ketones": 1.0},
            "insulin option": {"insulinRate": 0.2},
            "episode type": {"episodeType": "demo"},
            "patient hash": {"patientHash": "short"},
            "missing delivery method": {"preExistingDiabetes": True},
            "unexpected delivery method": {"insulinDeliveryMethod": "pump"},
            "pH as string": {"pH": "7.15"},
            "weight as string": {"weight": "20"},
            "legal agreement as string": {"legalAgreement": "yes"},
            "shock present as integer": {"shockPresent": 0},
            "insulin rate as string": {"insulinRate": "0.1"},
        }
        for name, changes in cases.items():
            with self.subTest(case=name):
                self.assertEqual(self.post(**changes).status_code, 422)

    def test_05_pre_existing_diabetes_with_method(self):
        response = self.post(preExistingDiabetes=True, insulinDeliveryMethod="pump")
        self.assertEqual(response.status_code, 200, response.text)

    def test_06_sodium_osmolality(self):
        response = self.client.post("/sodium-osmolality", json={"sodium": 140.0, "glucose": 30.6})
        self.assertEqual(response.status_code, 200, response.text)
        body = response.json()
        self.assertAlmostEqual(body["correctedSodium"]["value"], 140.0 + 25.0 / 3.5)
        self.assertAlmostEqual(body["effectiveOsmolality"]["value"], 310.6)

    def test_07_stale_protocol_start(self):
        response = self.post(protocolStartDatetime=self.hours_ago(25))
        self.assertEqual(response.status_code, 422)
        self.assertIn("within the last 24 hours", response.text)

    def test_08_future_protocol_start(self):
        response = self.post(protocolStartDatetime=self.hours_ago(-2))
        self.assertEqual(response.status_code, 422)
        self.assertIn("no more than 1 hour in the future", response.text)

    def test_09_protocol_start_grace_period(self):
        """Just past 24 hours is still accepted: the form takes time to fill in."""
        response = self.post(protocolStartDatetime=self.hours_ago(24.05))
        self.assertEqual(response.status_code, 200, response.text)

    def test_10_integer_numbers_are_numbers(self):
        response = self.post(weight=20, glucose=24)
        self.assertEqual(response.status_code, 200, response.text)

    def test_11_weight_for_age_check(self):
        months = 12 * 18 + 1
        centiles = WeightCentiles(
            lower={"male": (10.0,) * months, "female": (22.0,) * months},
            upper={"male": (40.0,) * months, "female": (45.0,) * months},
        )
        limits = replace(VALIDATION_LIMITS, weight_centiles=centiles)
        with mock.patch.object(main, "VALIDATION_LIMITS", limits):
            blocked = self.post()
            self.assertEqual(blocked.status_code, 422)
            self.assertIn("range 22.00kg to 45.00kg for female patient aged 8 years and 6 months",
                          blocked.text)

            overridden = self.post(weightLimitOverride=True)
            self.assertEqual(overridden.status_code, 200, overridden.text)

    def test_12_weight_override_documented(self):
        schema = self.client.get("/openapi.json").json()
        field = schema["components"]["schemas"]["CalculationRequest"]["properties"]["weightLimitOverride"]
        self.assertIn("growth centile table", field["description"])


if __name__ == '__main__':
    unittest.main()
