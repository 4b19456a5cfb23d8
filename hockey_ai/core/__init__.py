"""Request pipeline core: breaker, executor, media assembly, routing."""
