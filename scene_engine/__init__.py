"""
Scene engine: product scene images and image-to-video jobs over
pluggable generative backends.
"""
