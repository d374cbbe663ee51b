"""
terralab Validation Module

Typed completion checks and the per-attempt validation report.
"""

from terralab.validation.validators import (
    VALIDATOR_KINDS,
    DirectoryExists,
    FileExists,
    OutputEquals,
    StateInspector,
    StateResourceCount,
    ValidationContext,
    ValidationReport,
    ValidationResult,
    Validator,
    run_validation,
    validator_from_dict,
)

__all__ = [
    # Validators
    "Validator",
    "FileExists",
    "DirectoryExists",
    "StateResourceCount",
    "OutputEquals",
    "VALIDATOR_KINDS",
    "validator_from_dict",
    # Running
    "StateInspector",
    "ValidationContext",
    "ValidationResult",
    "ValidationReport",
    "run_validation",
]
