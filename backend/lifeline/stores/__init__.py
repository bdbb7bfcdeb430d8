from .donations import DonationStore
from .donors import DonorStore
from .requests import RequestStore

__all__ = ["DonationStore", "DonorStore", "RequestStore"]
