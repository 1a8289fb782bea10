"""
Core translation pipeline: providers, cache, client and document formats
"""
