"""Image storage adapters.

Scope:
    - `object_store`: best-effort caching of panel images in an S3 bucket.
    - `proxy`: allow-listed passthrough for remote image URLs.

Non-goals:
    - No image decoding, resizing or format conversion.
"""
