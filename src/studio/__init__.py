"""Generation studio: asynchronous job orchestration for AI generation tools."""
