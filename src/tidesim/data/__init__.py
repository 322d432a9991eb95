"""
tidesim data module
Patient stores the dashboard reads generated patients from.
"""

from .store import InMemoryPatientStore, PatientStore, StoredPatient
from .tidepool import TidepoolClient, TidepoolPatientStore

__all__ = [
    "InMemoryPatientStore",
    "PatientStore",
    "StoredPatient",
    "TidepoolClient",
    "TidepoolPatientStore",
]
