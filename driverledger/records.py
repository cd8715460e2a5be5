# driverledger/records.py
"""
Record types stored by the registry.

Each record carries an ``exists`` flag. A record that was never written
reads as its zero value: every field empty and ``exists`` False.
"""

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Type, TypeVar

R = TypeVar("R", bound="_Record")


class _Record:
    """Shared (de)serialization for record dataclasses."""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls: Type[R], data: Dict[str, Any]) -> R:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class DriverProfile(_Record):
    """
    Personal and license details of a registered driver.

    Attributes:
        name: Full name
        date_of_birth: Date of birth, as supplied
        mobile: Mobile number
        email: Email address
        license_number: Driving license number
        address: Postal address
        blood_group: Blood group
        vehicle_type: Vehicle class the license covers
        image: Reference to a photo of the driver
        exists: True once the profile has been created
    """
    name: str = ""
    date_of_birth: str = ""
    mobile: str = ""
    email: str = ""
    license_number: str = ""
    address: str = ""
    blood_group: str = ""
    vehicle_type: str = ""
    image: str = ""
    exists: bool = False


@dataclass
class VehicleRecord(_Record):
    """
    The current vehicle of a driver. Writing a new one replaces the old.

    Attributes:
        make: Manufacturer
        model: Model name
        registration_number: Registration plate
        registration_date: Date of registration
        chassis_number: Chassis / VIN
        insurance_provider: Insurer name
        insurance_policy_number: Insurance policy number
        insurance_expiry: Insurance expiry date
        owner_name: Registered owner of the vehicle
        exists: True once a vehicle has been recorded
    """
    make: str = ""
    model: str = ""
    registration_number: str = ""
    registration_date: str = ""
    chassis_number: str = ""
    insurance_provider: str = ""
    insurance_policy_number: str = ""
    insurance_expiry: str = ""
    owner_name: str = ""
    exists: bool = False


@dataclass
class AccidentRecord(_Record):
    """
    One entry of a driver's accident history.

    ``timestamp`` is the time of the accident as reported; history order
    is the order in which entries were recorded.
    """
    timestamp: str = ""
    location: str = ""
    description: str = ""
    cause: str = ""
    case_status: str = ""
    claim_status: str = ""
    photo: str = ""
    fir_number: str = ""
    exists: bool = False
