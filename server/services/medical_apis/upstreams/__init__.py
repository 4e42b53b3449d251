# =============================================================================
# services/medical_apis/upstreams/__init__.py
# =============================================================================

"""
One client per external medical API
"""

from .rxnorm import RxNormClient
from .fhir import FHIRClient
from .clinical_trials import ClinicalTrialsClient
from .medlineplus import MedlinePlusClient
from .openfda import OpenFDAClient
from .odphp import ODPHPClient

__all__ = [
    "RxNormClient",
    "FHIRClient",
    "ClinicalTrialsClient",
    "MedlinePlusClient",
    "OpenFDAClient",
    "ODPHPClient"
]
