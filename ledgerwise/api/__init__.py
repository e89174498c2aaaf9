from ledgerwise.api.categorization import router as categorization_router
from ledgerwise.api.corrections import router as corrections_router
from ledgerwise.api.learning import router as learning_router

__all__ = ["categorization_router", "corrections_router", "learning_router"]
