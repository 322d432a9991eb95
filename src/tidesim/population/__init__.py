from .generator import GeneratedPatient, PatientGenerator, Population, plan_population
from .profiles import GlucoseProfile, build_samples, profile_for

__all__ = [
    "GeneratedPatient",
    "PatientGenerator",
    "Population",
    "plan_population",
    "GlucoseProfile",
    "build_samples",
    "profile_for",
]
