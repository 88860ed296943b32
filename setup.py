"""Install arXiv native users package."""

from setuptools import setup, find_packages

setup(
    name='arxiv-native-users',
    version='0.1.0',
    packages=[f'arxiv.{package}' for package
              in find_packages('./arxiv', exclude=['*test*'])],
    install_requires=[
        "sqlalchemy>=1.4",
        "redis>=4.1",
        "flask",
        "bcrypt",
        "pytz"
    ],
    extras_require={
        "test": [
            "pytest",
            "hypothesis",
            "mimesis"
        ]
    },
    zip_safe=False
)
