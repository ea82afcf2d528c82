from .user import User
from .facility import BloodBank, Hospital
from .inventory import BloodInventory
from .request import BloodRequest
from .donation import Donation
