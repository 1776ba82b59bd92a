# Copyright (C) Inco - All Rights Reserved.
#
# Unauthorized copying of this file, via any medium, is strictly prohibited. Proprietary and confidential.
#

'''Conftest module.'''

def pytest_configure(config):
    config.addinivalue_line('markers', 'smoke: mark test as smoke')
    config.addinivalue_line('markers', 'scenario: reference scenario with hand-checked figures')
    config.addinivalue_line('markers', 'property: test asserts a property that holds for any input')
    config.addinivalue_line('markers', 'limitation: test reveals an intentional limitation of the API')
