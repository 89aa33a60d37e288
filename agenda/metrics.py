from prometheus_client import Counter, Histogram

REQUEST_COUNTER = Counter(
    "agenda_api_requests_total",
    "Total number of processed HTTP requests.",
    ["method", "path", "status", "tenant"],
)
REQUEST_LATENCY = Histogram(
    "agenda_api_request_duration_seconds",
    "HTTP request latency in seconds.",
    ["method", "path"],
)
SLOTS_GENERATED = Counter(
    "agenda_slots_generated_total",
    "Slots inserted by the slot generator.",
)
SLOT_GENERATION_ERRORS = Counter(
    "agenda_slot_generation_errors_total",
    "Days or providers whose slot generation failed.",
    ["scope"],
)
BOOKING_OUTCOMES = Counter(
    "agenda_booking_requests_total",
    "Booking creation attempts by outcome.",
    ["outcome"],
)
SLOT_PROJECTION_FAILURES = Counter(
    "agenda_slot_projection_failures_total",
    "Slot status updates that failed after the booking was committed.",
)
