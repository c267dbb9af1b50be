"""
FastAPI Taskboard Backend package.

This module marks the 'src.api' directory as a Python package. The app
factory lives in `src.api.main` (`create_app`), with a default instance at
`src.api.main:app`.
"""
