"""
Domain errors raised below the HTTP layer.
main.py maps them onto HTTPException.
"""


class StoryNotFoundError(Exception):
    """Story document does not exist"""
    pass


class EpisodeNotFoundError(Exception):
    """No episode with the given id in the story"""
    pass


class EpisodeIndexError(IndexError):
    """Episode position outside the current list"""
    pass


class PersistenceError(Exception):
    """Writing the episode list back to the store failed; nothing was changed"""
    pass


class StorageError(Exception):
    """Media upload to object storage failed"""
    pass


class PushError(Exception):
    """Push gateway rejected or did not answer the send request"""
    pass
