"""
Mobile feed and search service
"""
