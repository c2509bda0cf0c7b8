"""
fines.py
Static fine table and fine calculation for recorded violations.
"""

from typing import Dict, Iterable, Mapping, Optional, Tuple


# Amounts in INR. Crime types not listed here carry no fine.
FINE_RATES: Dict[str, int] = {
    "helmet_missing_driver": 1000,
    "helmet_missing_pillion": 1000,
    "triple_riding": 2000,
    "wrong_side": 1500,
    "signal_jump": 1000,
    "mobile_usage_driver": 2000,
    "no_seatbelt_driver": 1000,
    "no_seatbelt_passenger": 500,
    "red_light_signal_break": 800,
}


def fine_for(crime_type: str, rates: Optional[Mapping[str, int]] = None) -> int:
    """Rate for one crime type, 0 if unknown."""
    table = FINE_RATES if rates is None else rates
    return int(table.get(crime_type, 0) or 0)


def compute_fines(
    crime_types: Iterable[str],
    rates: Optional[Mapping[str, int]] = None
) -> Tuple[Dict[str, int], int]:
    """
    Returns (fine_breakdown, total_fine).

    Only crime types with a positive rate appear in the breakdown; unknown
    types are still part of the record but add nothing to the total.

    Example:
        compute_fines(["helmet_missing_driver", "triple_riding"])
        -> ({"helmet_missing_driver": 1000, "triple_riding": 2000}, 3000)
    """
    breakdown: Dict[str, int] = {}
    for crime in crime_types:
        amount = fine_for(crime, rates)
        if amount > 0:
            breakdown[crime] = amount

    return breakdown, sum(breakdown.values())
