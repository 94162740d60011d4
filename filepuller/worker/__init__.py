"""
Worker module.
Contains the consumption loop, the notification handler and object retrieval.
"""
