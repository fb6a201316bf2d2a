"""
Accredit: course catalog review and credential certification for a
university learning platform.

Teachers submit courses to their university's catalog, university admins
approve or reject them, and teachers certify the courses students claim to
have completed.
"""

__version__ = "1.0.0"
__author__ = "Accredit Development Team"
__description__ = "Course and credential validation workflow"
