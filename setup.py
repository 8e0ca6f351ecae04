"""Install the collab-users identity package."""

from setuptools import setup, find_packages

setup(
    name='collab-users',
    version='0.1.0',
    packages=find_packages(exclude=['*test*']),
    python_requires='>=3.8',
    install_requires=[
        "sqlalchemy>=1.4",
        "flask",
        "flask-sqlalchemy>=3.0",
        "python-dateutil",
        "pytz",
        "pyjwt>=2.0",
        "redis>=4.0",
        "celery>=5.0",
        "kombu",
        "authlib>=1.0",
        "requests",
        "python-json-logger",
        "click",
    ],
    extras_require={
        'test': [
            "pytest",
            "hypothesis",
            "mimesis>=5.0",
        ]
    },
    entry_points={
        'console_scripts': [
            'collab-users=collab_users.cli:main',
        ]
    },
    zip_safe=False
)
