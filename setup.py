from setuptools import find_packages, setup
import os
from glob import glob

package_name = 'scalar_cam'

setup(
    name=package_name,
    version='0.1.0',
    packages=find_packages(exclude=['test']),
    data_files=[
        # Per-camera configs
        (os.path.join('share', package_name, 'config'), glob('config/*.yaml')),
    ],
    python_requires='>=3.8',
    install_requires=[
        'setuptools',
        'PyYAML',         # YAML support for per-camera config files
        'requests',       # JSON-RPC and live view over HTTP
        'numpy',
        'opencv-python',  # JPEG decoding / display of live view frames
    ],
    extras_require={
        'test': ['pytest'],
    },
    zip_safe=True,
    maintainer='davide',
    maintainer_email='davide.botturi@prospecto.cloud',
    description='Remote control and live view for cameras with a JSON-RPC over HTTP API',
    license='TODO: License declaration',
    tests_require=['pytest'],
    entry_points={
        'console_scripts': [
            'scalar-cam-liveview = scalar_cam.liveview_node:main',
        ],
    },
)
