"""cartcompare - cross-site cart price comparison engine."""

# Lazy imports to avoid loading Playwright and the model client on import
def __getattr__(name):
    if name == "ComparisonOrchestrator":
        from .comparison import ComparisonOrchestrator
        return ComparisonOrchestrator
    elif name == "compare_cart_direct":
        from .api import compare_cart_direct
        return compare_cart_direct
    elif name == "build_orchestrator":
        from .api import build_orchestrator
        return build_orchestrator
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")

__version__ = "0.1.0"
__all__ = ["ComparisonOrchestrator", "build_orchestrator", "compare_cart_direct"]
