# src/idivc/physics/constants.py
"""
Detector constants shared by the channel map, calibration and reduction.

Sensor ids below IV_FIRST_SENSOR belong to the inner detector (ID), the
rest to the inner veto (IV).
"""

N_SLOTS = 520            # channel slots per raw event
N_SENSORS = 468          # sensor ids are 0..467
IV_FIRST_SENSOR = 390    # first inner-veto sensor id

TIME_SENTINEL = 9999.0   # running-minimum start value
TIME_CEILING = 999.0     # minima above this mean "no hit"

NO_HIT = -1              # reduced-event sentinel for time and sensor
UNMAPPED = -1            # channel with no sensor behind it
DISCONNECTED = -2        # channel wired to nothing usable
