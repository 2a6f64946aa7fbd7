"""
Scheduling Domain

Turns each doctor's weekly availability template into bookable slots, commits
bookings without exceeding a slot's capacity, and runs the daily check-in
token queue.

Structure:
```
app/domain/scheduling/
├── schemas.py              # Schedule template, appointment and queue schemas
├── slot_generator.py       # Weekly template -> slot start times (pure)
├── repository.py           # Schedule, appointment and queue queries
├── availability_service.py # Open slots for a doctor on a date
├── booking_service.py      # Book / reschedule with per-slot capacity
├── queue_service.py        # Check-in tokens, status workflow, wait estimates
├── schedule_service.py     # Schedule CRUD and leave dates
├── locks.py                # Per-key locks for the read-then-write paths
├── exceptions.py           # Error types with machine-readable codes
├── router_schedules.py     # /doctor-schedules
├── router_appointments.py  # /availability, /appointments
├── router_queue.py         # /queue
└── router_public.py        # /public-booking, /public (rate limited)
```

Status workflow:
scheduled → checked-in → in-progress → completed, with cancelled and no-show
reachable from scheduled or checked-in. Cancelled and no-show appointments
release their seat in the slot.
"""
