"""Describes the LunchBuddy domain. Centres around the planning session.

A session walks planning -> ordering -> picked up -> delivered once a day.

- Options and votes only move while planning.
- Whoever flips the session to ordering is the volunteer; the option winning
  at that moment gets written down next to their name.
- Food requests pile up afterwards, one per person by convention only.
- Nothing survives the night. The first touch on a new day wipes the session
  back to planning, lazily, there is no scheduler.

Users are a single shared directory, not per session. Names are whatever
people type in.
"""
