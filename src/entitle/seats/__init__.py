"""Seat allocation and license key lifecycle."""

from entitle.seats.license_keys import allocate_license_key, generate_license_key
from entitle.seats.manager import LicenseActivation, SeatManager

__all__ = ["LicenseActivation", "SeatManager", "allocate_license_key", "generate_license_key"]
