from faker.providers import BaseProvider # type: ignore
import random

class CustomProvider(BaseProvider):
    # Excluded for readability: I, l, 1, O, o, 0
    human_charset = "abcdefghijkmnopqrstuvwxyzABCDEFGHJKLMNPQRSTUVWXYZ23456789"

    def custom_id(self):
        # Client-assigned _id, uniform in [0, 1) so the pre-split chunks get an equal share
        return random.random()

    def padding(self, size):
        # Filler string that makes a document roughly `size` bytes
        if size <= 0:
            return ""
        return ''.join(random.choices(self.human_charset, k=size))

    def workload_document(self, padding, custom_id=None, from_updates=True):
        if from_updates:
            doc = {
                "rand": random.random(),
                "str": padding,
                "fromUpdates": True,
            }
        else:
            # Initial load documents carry an oldField for the pipeline update to archive later
            doc = {
                "str": padding,
                "a": 1,
                "oldField": self.generator.word(),
            }
        # No _id means the server assigns an ObjectId
        if custom_id is not None:
            doc["_id"] = custom_id
        return doc
