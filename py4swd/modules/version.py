# -*- coding: utf-8 -*-
'''
Version string and release date.
'''

from datetime import datetime

VERSION = '0.9.0'


def versionstrg():
    '''
    Set version string and date.
    '''
    now = datetime.now()
    version = '- Py4SWD ' + VERSION + ' -'
    release_date = now.strftime('%m/%d/%Y, %H:%M:%S')

    return version, release_date
