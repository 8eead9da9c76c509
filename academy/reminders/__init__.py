"""Course reminder service (in-process scheduler, dispatcher, admin API).

Reminders are kept in memory only. The registry is rebuilt at startup by
sweeping upcoming courses, so nothing here needs a broker or a jobs table.
"""
