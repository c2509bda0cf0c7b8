"""
registry.py
Local RTO (vehicle registration) lookup.

The table is static; lookups are synchronous and never raise. A miss returns
OwnerDetails with every field set to None.
"""

from typing import Dict, List, Optional

from .event_schema import OwnerDetails, normalize_plate


RTO_DATABASE: List[Dict[str, str]] = [
    {
        "vehicle_number": "MH12KN4567",
        "owner_name": "Sandeep Balabantaray",
        "address": "Flat 203, Sai Heights, Baner, Pune, Maharashtra",
        "vehicle_model": "Honda CB Shine",
        "mobile_number": "9876501234",
        "email": "sandeepcool2036@gmail.com",
    },
    {
        "vehicle_number": "MH12KG3456",
        "owner_name": "Purnima Jagganath Sahoo",
        "address": "Kothrud, Pune, Maharashtra",
        "vehicle_model": "Hero Splendor",
        "mobile_number": "9876512340",
        "email": "purnimajagganathsahoo@gmail.com",
    },
    {
        "vehicle_number": "MP04GB5586",
        "owner_name": "Meet Bikhani",
        "address": "B-104, Lajpat Nagar, New Delhi",
        "vehicle_model": "Hyundai i20 Sportz",
        "mobile_number": "9876523401",
        "email": "meetbikhani2022@vitbhopal.ac.in",
    },
    {
        "vehicle_number": "MH12DE1234",
        "owner_name": "Arjun Mehra",
        "address": "12, Indiranagar, Bengaluru, Karnataka",
        "vehicle_model": "Kia Seltos HTK",
        "mobile_number": "9876534012",
        "email": "sandeepcool2036@gmail.com",
    },
    {
        "vehicle_number": "KA65JK5678",
        "owner_name": "Neha Patel",
        "address": "4-A, Navrang Society, Ahmedabad, Gujarat",
        "vehicle_model": "Honda City VX",
        "mobile_number": "9876540123",
        "email": "perfectpower56@gmail.com",
    },
    {
        "vehicle_number": "TN10JK7890",
        "owner_name": "Karthik Raman",
        "address": "23, T Nagar, Chennai, Tamil Nadu",
        "vehicle_model": "TVS Apache RTR 160",
        "mobile_number": "9876556789",
        "email": "karthik.raman@example.com",
    },
    {
        "vehicle_number": "RJ14LM4321",
        "owner_name": "Simran Kaur",
        "address": "Plot 9, Malviya Nagar, Jaipur, Rajasthan",
        "vehicle_model": "Mahindra Scorpio S5",
        "mobile_number": "9876567890",
        "email": "simran.kaur@example.com",
    },
    {
        "vehicle_number": "UP16NP8765",
        "owner_name": "Abhishek Yadav",
        "address": "House 77, Sector 12, Noida, Uttar Pradesh",
        "vehicle_model": "Royal Enfield Classic 350",
        "mobile_number": "9876578901",
        "email": "abhishek.yadav@example.com",
    },
    {
        "vehicle_number": "HR26QR6543",
        "owner_name": "Pooja Singh",
        "address": "H-55, DLF Phase 3, Gurugram, Haryana",
        "vehicle_model": "Honda Activa 6G",
        "mobile_number": "9876589012",
        "email": "pooja.singh@example.com",
    },
    {
        "vehicle_number": "WB02ST2109",
        "owner_name": "Anirban Chatterjee",
        "address": "Flat 5B, Salt Lake, Kolkata, West Bengal",
        "vehicle_model": "Tata Nexon XZ",
        "mobile_number": "9876590123",
        "email": "anirban.c@example.com",
    },
    {
        "vehicle_number": "MH01UV9988",
        "owner_name": "Riya Kulkarni",
        "address": "201, Lake View Apartments, Powai, Mumbai, Maharashtra",
        "vehicle_model": "Maruti Suzuki Baleno",
        "mobile_number": "9876601234",
        "email": "riya.kulkarni@example.com",
    },
    {
        "vehicle_number": "KL07WX5566",
        "owner_name": "Aditya Nair",
        "address": "12/45, Panampilly Nagar, Kochi, Kerala",
        "vehicle_model": "Hyundai Creta SX",
        "mobile_number": "9876612345",
        "email": "aditya.nair@example.com",
    },
    {
        "vehicle_number": "CG04YZ3344",
        "owner_name": "Shruti Deshmukh",
        "address": "Near Civil Lines, Raipur, Chhattisgarh",
        "vehicle_model": "Hero Splendor Plus",
        "mobile_number": "9876623456",
        "email": "shruti.deshmukh@example.com",
    },
    {
        "vehicle_number": "AP09AB7788",
        "owner_name": "Varun Reddy",
        "address": "Plot 11, Madhapur, Hyderabad, Telangana",
        "vehicle_model": "Suzuki Access 125",
        "mobile_number": "9876634567",
        "email": "varun.reddy@example.com",
    },
    {
        "vehicle_number": "BR01CD2233",
        "owner_name": "Rahul Kumar",
        "address": "Lane 3, Boring Road, Patna, Bihar",
        "vehicle_model": "Tata Punch Adventure",
        "mobile_number": "9876645678",
        "email": "rahul.kumar@example.com",
    },
    {
        "vehicle_number": "PB10EF6677",
        "owner_name": "Gurpreet Singh",
        "address": "Green Enclave, Ludhiana, Punjab",
        "vehicle_model": "Hyundai Venue S",
        "mobile_number": "9876656789",
        "email": "gurpreet.singh@example.com",
    },
    {
        "vehicle_number": "UK07GH1122",
        "owner_name": "Megha Joshi",
        "address": "Rajpur Road, Dehradun, Uttarakhand",
        "vehicle_model": "Honda Jazz VX",
        "mobile_number": "9876667890",
        "email": "megha.joshi@example.com",
    },
    {
        "vehicle_number": "OD02JK8899",
        "owner_name": "Sourav Mishra",
        "address": "Saheed Nagar, Bhubaneswar, Odisha",
        "vehicle_model": "Yamaha FZ-S V3",
        "mobile_number": "9876678901",
        "email": "sourav.mishra@example.com",
    },
    {
        "vehicle_number": "AS01LM4455",
        "owner_name": "Nikita Das",
        "address": "Zoo Road, Guwahati, Assam",
        "vehicle_model": "Maruti Suzuki Dzire VXi",
        "mobile_number": "9876689012",
        "email": "nikita.das@example.com",
    },
    {
        "vehicle_number": "JK01NP7789",
        "owner_name": "Imran Khan",
        "address": "Rajbagh, Srinagar, Jammu & Kashmir",
        "vehicle_model": "Mahindra XUV300 W6",
        "mobile_number": "9876690123",
        "email": "imran.khan@example.com",
    },
]

# normalized plate -> row
_INDEX: Dict[str, Dict[str, str]] = {
    normalize_plate(row["vehicle_number"]): row for row in RTO_DATABASE
}


def lookup_vehicle(plate_number: Optional[str]) -> OwnerDetails:
    """
    Resolve owner details for a plate.

    'MH 12 KN 4567' and 'MH12KN4567' resolve to the same owner.
    """
    row = _INDEX.get(normalize_plate(plate_number))
    if row is None:
        return OwnerDetails()

    return OwnerDetails(
        owner_name=row["owner_name"],
        owner_address=row["address"],
        owner_phone=row["mobile_number"],
        owner_email=row["email"],
        vehicle_model=row["vehicle_model"],
    )
