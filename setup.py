from setuptools import setup, find_packages

setup(
    name="dissect.vhdx",
    version="1.0.0",
    python_requires=">=3.9",
    packages=list(map(lambda v: "dissect." + v, find_packages("dissect"))),
    install_requires=[
        "dissect.cstruct>=4.0,<5.0",
        "dissect.util>=3.15,<3.22",
    ],
    extras_require={
        "test": [
            "pytest",
        ]
    },
)
