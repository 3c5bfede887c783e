# Subscription billing engine tests
