"""
Setup script for vested_uploader.
"""
import pathlib

from setuptools import find_packages, setup


def read_requirements(path):
    with pathlib.Path(path).open() as requirements_txt:
        return [
            line.strip()
            for line in requirements_txt
            if line.strip() and not line.strip().startswith("#")
        ]


setup(
    name="vested_uploader",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={
        "": "src",
    },
    include_package_data=True,
    zip_safe=False,
    install_requires=read_requirements("requirements.txt"),
    extras_require={
        "test": read_requirements("dev-requirements.txt"),
    },
    entry_points={
        "console_scripts": [
            "vested-uploader=vested_uploader.main_pipeline:main",
        ],
    },
    python_requires=">=3.10",
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)
