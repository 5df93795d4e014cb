PENDING = "pending"
PAID = "paid"
COMPLETED = "completed"
CANCELLED = "cancelled"
EXPIRED = "expired"

STATUSES = {PENDING, PAID, COMPLETED, CANCELLED, EXPIRED}

# Bookings in these states have been paid for and count towards revenue.
REVENUE_STATUSES = {PAID, COMPLETED}

SEAT_BOOKED = "booked"

PAYMENT_COMPLETED = "completed"