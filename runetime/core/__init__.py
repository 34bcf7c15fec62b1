"""
Core storage layer - readings, daily rollups, compression lease and the background scheduler.
"""
