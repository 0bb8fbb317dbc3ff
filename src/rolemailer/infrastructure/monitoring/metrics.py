from prometheus_client import Counter, Histogram

PASSES = Counter("mailer_passes_total", "Dispatch passes by outcome", ["outcome"])
PASS_LATENCY = Histogram("mailer_pass_latency_seconds", "Duration of a resolve-and-dispatch pass")
MESSAGES_SENT = Counter("mailer_messages_sent_total", "Messages handed to the transport", ["event"])
DISPATCH_FAILURES = Counter("mailer_dispatch_failures_total", "Per-user dispatch failures", ["event", "kind"])
EVENTS_MARKED = Counter("mailer_events_marked_total", "Processed-event rows written", ["event"])
TRANSITIONS = Counter("mailer_transitions_total", "Role transitions recorded")
