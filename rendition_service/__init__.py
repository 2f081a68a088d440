"""
Batch image rendition microservice package.

Exposes reusable primitives for resolving output names, transcoding uploads
into PNG/WebP renditions, bundling outputs into archives, and serving the
FastAPI application.
"""
