from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import pandas as pd

from tidesim.config import Credentials
from tidesim.errors import MissingConfiguration
from tidesim.population.generator import GeneratedPatient

logger = logging.getLogger("tidesim.data")

_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "tidesim.patients")


def require_ids(clinic_id: str, tag_id: str) -> None:
    if not clinic_id:
        raise MissingConfiguration("A clinic id is required to store patients")
    if not tag_id:
        raise MissingConfiguration("A tag id is required to store patients")


class PatientStore(ABC):
    """Where generated patients are persisted for the dashboard to read."""

    @abstractmethod
    def create_patients(self, patients: Iterable[GeneratedPatient]) -> List[str]:
        """Persist *patients* with their samples and return their ids, in order."""

    @abstractmethod
    def delete_patients(self, credentials: Optional[Credentials], clinic_id: str, tag_id: str) -> int:
        """Delete every patient under the clinic tag; return how many were removed."""


@dataclass
class StoredPatient:
    id: str
    name: str
    clinic_id: str
    tag_id: str
    last_upload: pd.Timestamp
    samples: pd.DataFrame = field(repr=False)


class InMemoryPatientStore(PatientStore):
    """
    Dictionary-backed store.

    Ids are derived from clinic, tag and name, so storing the same patient
    twice replaces it instead of duplicating it.
    """

    def __init__(self) -> None:
        self.records: Dict[str, StoredPatient] = {}

    @staticmethod
    def patient_id(clinic_id: str, tag_id: str, name: str) -> str:
        return str(uuid.uuid5(_ID_NAMESPACE, f"{clinic_id}/{tag_id}/{name}"))

    def create_patients(self, patients: Iterable[GeneratedPatient]) -> List[str]:
        ids: List[str] = []
        for patient in patients:
            require_ids(patient.clinic_id, patient.tag_id)
            patient_id = self.patient_id(patient.clinic_id, patient.tag_id, patient.name)
            self.records[patient_id] = StoredPatient(
                id=patient_id,
                name=patient.name,
                clinic_id=patient.clinic_id,
                tag_id=patient.tag_id,
                last_upload=patient.last_upload,
                samples=patient.samples.copy(),
            )
            ids.append(patient_id)
        logger.info("Stored %d patients in memory", len(ids))
        return ids

    def delete_patients(self, credentials: Optional[Credentials], clinic_id: str, tag_id: str) -> int:
        require_ids(clinic_id, tag_id)
        doomed = [pid for pid, rec in self.records.items() if rec.clinic_id == clinic_id and rec.tag_id == tag_id]
        for pid in doomed:
            del self.records[pid]
        logger.info("Deleted %d patients from clinic %s tag %s", len(doomed), clinic_id, tag_id)
        return len(doomed)

    def list_patients(self, clinic_id: str, tag_id: str) -> List[StoredPatient]:
        return [rec for rec in self.records.values() if rec.clinic_id == clinic_id and rec.tag_id == tag_id]
