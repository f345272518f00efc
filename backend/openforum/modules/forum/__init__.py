"""
Forum Module - community discussions.

Categories, threads, posts, votes, reactions and tags.
"""
