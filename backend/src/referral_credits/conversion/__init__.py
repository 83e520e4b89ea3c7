"""First-purchase referral conversion."""

from referral_credits.conversion.orchestrator import (
    ConversionOrchestrator,
    ConversionResult,
    conversion_orchestrator,
)

__all__ = ["ConversionOrchestrator", "ConversionResult", "conversion_orchestrator"]
