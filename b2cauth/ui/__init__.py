"""Account UI (sign-in / sign-out / access-denied) for B2C virtual schemes."""
