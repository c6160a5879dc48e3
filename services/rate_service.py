"""Hourly cost model.

Only continuously consumed resources (RAM, CPU, disk) are billed by the hour.
Database, backup and allocation slots are permanent purchases and never
appear in the hourly cost.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING
from typing import Union

from services.exceptions import BillingConfigError

DEFAULT_RAM_RATE = 1024
DEFAULT_CPU_RATE = 100
DEFAULT_DISK_RATE = 5120
DEFAULT_GRACE_PERIOD = 24


@dataclass(frozen=True)
class BillingRates:
    ram_rate: float = DEFAULT_RAM_RATE
    cpu_rate: float = DEFAULT_CPU_RATE
    disk_rate: float = DEFAULT_DISK_RATE
    grace_period: int = DEFAULT_GRACE_PERIOD
    billing_enabled: bool = False

    def validate(self) -> "BillingRates":
        for name in ("ram_rate", "cpu_rate", "disk_rate"):
            value = getattr(self, name)
            if value is None:
                raise BillingConfigError(f"Billing rate {name} is not configured")
            rate = _to_decimal(value)
            if not rate.is_finite() or rate <= 0:
                raise BillingConfigError(f"Billing rate {name} must be positive, got {value}")
        return self


def _to_decimal(value: Union[int, float, str, Decimal]) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def calculate_hourly_cost(
    ram: Union[int, float],
    cpu: Union[int, float],
    disk: Union[int, float],
    rates: BillingRates
) -> Decimal:
    rates.validate()

    amounts = {"ram": _to_decimal(ram), "cpu": _to_decimal(cpu), "disk": _to_decimal(disk)}
    for name, amount in amounts.items():
        if not amount.is_finite() or amount < 0:
            raise ValueError(f"{name} must be a non-negative number, got {amount}")

    return (
        amounts["ram"] / _to_decimal(rates.ram_rate)
        + amounts["cpu"] / _to_decimal(rates.cpu_rate)
        + amounts["disk"] / _to_decimal(rates.disk_rate)
    )


def hourly_charge(
    ram: Union[int, float],
    cpu: Union[int, float],
    disk: Union[int, float],
    rates: BillingRates
) -> int:
    # Whole coins only, always rounded up.
    cost = calculate_hourly_cost(ram, cpu, disk, rates)
    return int(cost.to_integral_value(rounding=ROUND_CEILING))


def format_cost(value: Decimal) -> str:
    normalized = value.quantize(Decimal('0.000001')).normalize()
    result = format(normalized, 'f')
    if '.' in result:
        result = result.rstrip('0').rstrip('.')
    return result if result != '-0' else '0'
