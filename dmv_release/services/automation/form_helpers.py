"""
Field contract for the California DMV Notice of Release of Liability form

The NRL form is a third-party page. The selectors below are the versioned
contract this service drives; when the DMV changes the form, update them
here and bump FORM_VERSION. Each field lists fallbacks in priority order.
"""

import base64

FORM_VERSION = "nrl-2024.1"

YES = "Y"
NO = "N"


class NrlFormSelectors:
    """Selectors for the NRL application form"""

    # Seller (releasing party)
    SELLER_IS_COMPANY = [
        'input[name="sellerIsCompany"]',
        'select[name="sellerIsCompany"]',
    ]
    SELLER_COMPANY_NAME = [
        'input[name="sellerCompanyName"]',
        '#sellerCompanyName',
        'input[name="sellerBusinessName"]',
    ]
    SELLER_ADDRESS = [
        'input[name="sellerAddress"]',
        '#sellerStreetAddress',
    ]
    SELLER_CITY = [
        'input[name="sellerCity"]',
        '#sellerCity',
    ]
    SELLER_STATE = [
        'select[name="sellerState"]',
        'input[name="sellerState"]',
    ]
    SELLER_ZIP = [
        'input[name="sellerZip"]',
        '#sellerZipCode',
    ]

    # Buyer (new owner)
    BUYER_IS_COMPANY = [
        'input[name="buyerIsCompany"]',
        'select[name="buyerIsCompany"]',
    ]
    BUYER_FIRST_NAME = [
        'input[name="buyerFirstName"]',
        '#buyerFirstName',
    ]
    BUYER_LAST_NAME = [
        'input[name="buyerLastName"]',
        '#buyerLastName',
    ]
    BUYER_ADDRESS = [
        'input[name="buyerAddress"]',
        '#buyerStreetAddress',
    ]
    BUYER_CITY = [
        'input[name="buyerCity"]',
        '#buyerCity',
    ]
    BUYER_STATE = [
        'select[name="buyerState"]',
        'input[name="buyerState"]',
    ]
    BUYER_ZIP = [
        'input[name="buyerZip"]',
        '#buyerZipCode',
    ]

    # Vehicle
    VEHICLE_YEAR = [
        'input[name="vehicleYear"]',
        '#vehicleYear',
    ]
    VEHICLE_MAKE = [
        'input[name="vehicleMake"]',
        '#vehicleMake',
    ]
    VEHICLE_MODEL = [
        'input[name="vehicleModel"]',
        '#vehicleModel',
    ]
    VEHICLE_VIN = [
        'input[name="vehicleId"]',
        'input[name="vin"]',
        '#vehicleIdNumber',
    ]
    LICENSE_PLATE = [
        'input[name="licensePlate"]',
        '#licensePlateNumber',
    ]

    # Sale
    SALE_PRICE = [
        'input[name="salePrice"]',
        '#sellingPrice',
    ]
    SALE_DATE = [
        'input[name="saleDate"]',
        '#dateOfSale',
    ]

    SUBMIT_BUTTONS = [
        'input[type="submit"][name="submit"]',
        'button[type="submit"]',
        'input[type="submit"]',
        'xpath=//input[@value="Submit"]',
    ]


def to_data_uri(image: bytes, mime: str = "image/png") -> str:
    """Encode a screenshot for the event stream"""
    return f"data:{mime};base64,{base64.b64encode(image).decode('ascii')}"
