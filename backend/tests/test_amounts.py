import unittest
from decimal import Decimal

from app.services.credits.amounts import as_float, from_minor, positive_minor, to_minor


class TestAmounts(unittest.TestCase):
    def test_to_minor_accepts_operation_costs(self):
        self.assertEqual(to_minor(1), 100)
        self.assertEqual(to_minor("0.5"), 50)
        self.assertEqual(to_minor(2.0), 200)
        self.assertEqual(to_minor(Decimal("2.25")), 225)
        self.assertEqual(to_minor(0.1), 10)

    def test_repeated_small_deductions_do_not_drift(self):
        balance = to_minor(7)
        for _ in range(70):
            balance -= to_minor(0.1)
        self.assertEqual(balance, 0)

    def test_rejects_more_than_two_decimals(self):
        with self.assertRaises(ValueError):
            to_minor("0.001")

    def test_rejects_non_numbers(self):
        for bad in (True, "abc", float("nan"), float("inf")):
            with self.assertRaises(ValueError):
                to_minor(bad)

    def test_positive_minor(self):
        self.assertEqual(positive_minor("1.5"), 150)
        with self.assertRaises(ValueError):
            positive_minor(0)
        with self.assertRaises(ValueError):
            positive_minor(-1)

    def test_from_minor(self):
        self.assertEqual(from_minor(650), Decimal("6.50"))
        self.assertEqual(from_minor(None), Decimal("0.00"))
        self.assertEqual(as_float(-250), -2.5)


if __name__ == "__main__":
    unittest.main()
