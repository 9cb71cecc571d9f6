"""
Core building blocks shared by the synchronization components.
"""
