"""Hockey AI request pipeline.

Resilient multi-provider orchestration for shot/stick video analysis and
hockey card image generation: circuit breaking, bounded retries with a
watchdog, persisted daily rate-limit tracking, one-hop provider fallback,
and concurrent media uploads.
"""

__version__ = "1.0.0"
