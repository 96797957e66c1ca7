import json
import os
import random
import time

import boto3
from faker import Faker

# SQS client configuration (defaults target a local SQS emulator)
queue_url = os.getenv("AWS_SQS_QUEUE_URL", "http://localhost:4566/000000000000/search-sync-events")
sqs = boto3.client(
    "sqs",
    region_name=os.getenv("AWS_REGION", "us-west-2"),
    endpoint_url=os.getenv("AWS_ENDPOINT_URL", "http://localhost:4566"),
)

# Initialize Faker for generating random data
faker = Faker()


# Canonical envelope for a claim change
def generate_claim_event():
    return {
        "eventType": random.choice(["INSERT", "UPDATE"]),
        "documentType": "claims",
        "timestamp": int(time.time() * 1000),
        "data": {
            "claimId": f"c-{faker.random_int(min=1, max=100000)}",
            "claimNumber": faker.bothify("CLM-#####"),
            "claimStatus": random.choice(["pending", "approved", "rejected"]),
            "consumerName": faker.name(),
            "consumerPostalCode": faker.postcode(),
            "amountRequested": round(random.uniform(50, 5000), 2),
            "lastModifiedDate": faker.iso8601(),
        },
        "metadata": {"source": "sample_producer", "correlationId": faker.uuid4()},
    }


# Key-value change-stream record for a location
def generate_location_record():
    latitude, longitude = faker.latitude(), faker.longitude()
    postal_code = faker.postcode()
    return {
        "eventID": faker.uuid4(),
        "eventName": "MODIFY",
        "eventSourceARN": "arn:aws:dynamodb:us-west-2:000000000000:table/postal_codes/stream/2024",
        "dynamodb": {
            "ApproximateCreationDateTime": int(time.time()),
            "Keys": {"id": {"S": postal_code}},
            "NewImage": {
                "id": {"S": postal_code},
                "countryId": {"S": faker.country_code()},
                "postalCode": {"S": postal_code},
                "postalCodeCenterPoint": {"S": f"{latitude},{longitude}"},
                "version": {"N": str(faker.random_int(min=1, max=20))},
            },
        },
    }


# Webhook for a software stack component
def generate_software_webhook():
    return {
        "action": "upsert",
        "ts": time.time(),
        "payload": {
            "name": faker.word().title() + " " + random.choice(["DB", "Cache", "Queue", "Framework"]),
            "category": random.choice(["database", "cache", "messaging", "web"]),
            "tags": faker.words(nb=3),
            "popularity_score": faker.random_int(min=0, max=100),
        },
    }


# Function to send messages to the queue
def produce_messages(num_messages=10):
    generators = [generate_claim_event, generate_location_record, generate_software_webhook]
    for _ in range(num_messages):
        message = random.choice(generators)()
        message_str = json.dumps(message)

        sqs.send_message(QueueUrl=queue_url, MessageBody=message_str)
        print(f"Sent message: {message_str}")

        time.sleep(1)  # Simulate real-time event streaming


# Run producer
if __name__ == "__main__":
    print("Producing sample change events...")
    produce_messages(num_messages=10)
    print("Finished producing messages.")
