"""
ShelfSync core: models, persistence and the sync queue processor
"""
