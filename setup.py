# -*- coding: utf-8 -*-
from setuptools import setup

# Import version from openidcore library itself
VERSION = __import__('openidcore').__version__
INSTALL_REQUIRES = [
    'cryptography>=42',
    'lxml',
    'requests',
]
EXTRAS_REQUIRE = {
    'quality': ('flake8', 'isort'),
    'tests': ('mock', 'testfixtures', 'responses', 'coverage'),
}
LONG_DESCRIPTION = open('README.md').read() + '\n\n' + open('Changelog.md').read()
CLASSIFIERS = [
    'Development Status :: 4 - Beta',
    'Environment :: Web Environment',
    'Intended Audience :: Developers',
    'License :: OSI Approved :: Apache Software License',
    'Operating System :: POSIX',
    'Programming Language :: Python',
    'Programming Language :: Python :: 3',
    'Topic :: Internet :: WWW/HTTP',
    'Topic :: Software Development :: Libraries :: Python Modules',
    'Topic :: System :: Systems Administration :: Authentication/Directory',
]


setup(
    name='openidcore',
    version=VERSION,
    description='OpenID identifier discovery, associations and Diffie-Hellman exchange.',
    long_description=LONG_DESCRIPTION,
    long_description_content_type='text/markdown',
    packages=['openidcore',
              'openidcore.consumer',
              'openidcore.server',
              'openidcore.store',
              'openidcore.yadis',
              ],
    python_requires='>=3.8',
    install_requires=INSTALL_REQUIRES,
    extras_require=EXTRAS_REQUIRE,
    test_suite='openidcore.test',
    classifiers=CLASSIFIERS,
)
