"""
                Tablewise Booking Engine

Table allocation and waitlist backend for restaurants: best-fit table
assignment per time slot, a first-come-first-served waiting list, and
automatic offers when tables free up.
"""

__version__ = "1.0.0"
